from dataclasses import dataclass

from solders.pubkey import Pubkey

LAMPORTS_PER_SOL = 1_000_000_000

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

AMM_V4_ACCOUNT_SIZE = 752
SPL_TOKEN_ACCOUNT_SIZE = 165
SWAP_BASE_IN_DISCRIMINATOR = 9


@dataclass(frozen=True)
class ProgramIds:
    amm_v4: Pubkey
    amm_authority: Pubkey
    openbook: Pubkey


# https://docs.raydium.io/raydium/protocol/developers/addresses
PROGRAM_IDS = {
    "mainnet": ProgramIds(
        amm_v4=Pubkey.from_string("675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"),
        amm_authority=Pubkey.from_string("5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"),
        openbook=Pubkey.from_string("srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX"),
    ),
    "devnet": ProgramIds(
        amm_v4=Pubkey.from_string("HWy1jotHpo6UqeQxx49dpYYdQB8wj9Qk9MdxwjLvDHB8"),
        amm_authority=Pubkey.from_string("DbQqP6ehDYmeYjcBaMRuA8tAJY1EjDUz9DpwSLjaQqfC"),
        openbook=Pubkey.from_string("EoTcMgcDRTJVZDMZWBoU6rhYHZfkNTVEAfz3uUJRcYGj"),
    ),
}


def get_program_ids(network: str) -> ProgramIds:
    try:
        return PROGRAM_IDS[network]
    except KeyError:
        raise ValueError(f"Unknown network: {network}") from None
