
# ============================================
# PROGRAM IDS
# ============================================
RAYDIUM_V4_PROGRAM = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
RAYDIUM_CPMM_PROGRAM = "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C"
RAYDIUM_CLMM_PROGRAM = "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK"
METEORA_DLMM = "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo"
METEORA_DAMM_V1 = "Eo7WjKq67rjJQSZxS6z3YkapzY3eMj6Xy8n5EQVn5UaB"
METEORA_DAMM_V2 = "cpamdpZCGKUy5JxQXB4dcpGPiikHawvSWAd6mEn1sGG"
ORCA_WHIRLPOOL = "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc"
PUMP_AMM_PROGRAM = "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA"

WSOL_MINT = "So11111111111111111111111111111111111111112"

# Programs whose pools we know how to follow
SUPPORTED_DEX_PROGRAMS = {
    RAYDIUM_V4_PROGRAM,
    RAYDIUM_CPMM_PROGRAM,
    RAYDIUM_CLMM_PROGRAM,
    METEORA_DLMM,
    METEORA_DAMM_V1,
    METEORA_DAMM_V2,
    ORCA_WHIRLPOOL,
    PUMP_AMM_PROGRAM,
}

# DexScreener dexId (+ optional pair label) -> program id
DEXSCREENER_DEX_PROGRAMS = {
    ("raydium", None): RAYDIUM_V4_PROGRAM,
    ("raydium", "CPMM"): RAYDIUM_CPMM_PROGRAM,
    ("raydium", "CLMM"): RAYDIUM_CLMM_PROGRAM,
    ("meteora", None): METEORA_DLMM,
    ("meteora", "DLMM"): METEORA_DLMM,
    ("meteora", "DYN"): METEORA_DAMM_V1,
    ("meteora", "DYN2"): METEORA_DAMM_V2,
    ("orca", None): ORCA_WHIRLPOOL,
    ("pumpswap", None): PUMP_AMM_PROGRAM,
}

# ============================================
# SWAP LOG MARKERS
# ============================================
# Cheap substring checks run before paying for a transaction fetch.
PROGRAM_INVOKE_MARKERS = tuple(
    f"Program {program} invoke"
    for program in (
        RAYDIUM_V4_PROGRAM,
        RAYDIUM_CPMM_PROGRAM,
        RAYDIUM_CLMM_PROGRAM,
        METEORA_DLMM,
        ORCA_WHIRLPOOL,
        PUMP_AMM_PROGRAM,
    )
)

SWAP_LOG_MARKERS = (
    "Program log: ray_log:",
    "SwapBaseIn",
    "SwapBaseOut",
    "Instruction: Swap",
    "Instruction: Buy",
    "Instruction: Sell",
)

# ============================================
# ON-CHAIN LAYOUTS (Raydium AMM v4 pool state)
# ============================================
RAYDIUM_POOL_STATE_SIZE = 752
RAYDIUM_POOL_BASE_DECIMALS_OFFSET = 32
RAYDIUM_POOL_QUOTE_DECIMALS_OFFSET = 40
RAYDIUM_POOL_BASE_MINT_OFFSET = 400
RAYDIUM_POOL_QUOTE_MINT_OFFSET = 432

DEFAULT_TOKEN_DECIMALS = 6
SOL_DECIMALS = 9
LAMPORTS_PER_SOL = 1_000_000_000

# ============================================
# API ENDPOINTS
# ============================================
RAYDIUM_API_BASE = "https://api-v3.raydium.io"
DEXSCREENER_API_BASE = "https://api.dexscreener.com"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
