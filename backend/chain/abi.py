"""Minimal ABIs for the contracts the pipeline talks to."""

PREDICTION_MARKET_CORE_ABI = [
    {
        "name": "marketCounter",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "markets",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "marketId", "type": "uint256"}],
        "outputs": [
            {"name": "id", "type": "uint256"},
            {"name": "marketType", "type": "uint8"},
            {"name": "status", "type": "uint8"},
            {"name": "resolutionTime", "type": "uint256"},
            {"name": "question", "type": "string"},
        ],
    },
]

AI_ORACLE_ABI = [
    {
        "name": "fulfillResolutionManual",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "marketId", "type": "uint256"},
            {"name": "outcome", "type": "uint8"},
            {"name": "confidence", "type": "uint8"},
        ],
        "outputs": [],
    },
]

REPUTATION_STAKING_ABI = [
    {
        "name": "getStaker",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [
            {"name": "stakedAmount", "type": "uint256"},
            {"name": "reputationScore", "type": "uint256"},
            {"name": "tier", "type": "uint8"},
            {"name": "correctVotes", "type": "uint256"},
            {"name": "totalVotes", "type": "uint256"},
            {"name": "slashedAmount", "type": "uint256"},
            {"name": "lastUpdateTime", "type": "uint256"},
            {"name": "hasNFT", "type": "bool"},
        ],
    },
]
