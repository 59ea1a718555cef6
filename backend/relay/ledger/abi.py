"""Minimal MegaRally contract ABI: the functions the relay reads and writes."""

_UINT256 = {"name": "", "type": "uint256"}


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[dict], mutability: str) -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": arg, "type": typ} for arg, typ in inputs],
        "outputs": outputs,
        "stateMutability": mutability,
    }


TOURNAMENT_FIELDS = (
    ("id", "uint256"),
    ("entryFee", "uint256"),
    ("startTime", "uint256"),
    ("endTime", "uint256"),
    ("prizePool", "uint256"),
    ("paidOut", "uint256"),
    ("ended", "bool"),
    ("cancelled", "bool"),
    ("winner", "address"),
)

ENTRY_FIELDS = (
    ("player", "address"),
    ("tournamentId", "uint256"),
    ("scores", "uint256[]"),
    ("attemptsUsed", "uint8"),
    ("tickets", "uint8"),
    ("totalScore", "uint256"),
    ("bestScore", "uint256"),
)

MEGARALLY_ABI = [
    # reads
    _fn(
        "tournaments",
        [("", "uint256")],
        [{"name": name, "type": typ} for name, typ in TOURNAMENT_FIELDS],
        "view",
    ),
    _fn(
        "getEntry",
        [("_tournamentId", "uint256"), ("_player", "address")],
        [
            {
                "name": "",
                "type": "tuple",
                "components": [{"name": name, "type": typ} for name, typ in ENTRY_FIELDS],
            },
        ],
        "view",
    ),
    _fn("tournamentCount", [], [_UINT256], "view"),
    _fn("pendingWithdrawals", [("", "address")], [_UINT256], "view"),
    # operator writes
    _fn("startAttempt", [("_tournamentId", "uint256"), ("_player", "address")], [], "nonpayable"),
    _fn(
        "recordObstacle",
        [("_tournamentId", "uint256"), ("_player", "address"), ("_obstacleId", "uint256")],
        [],
        "nonpayable",
    ),
    _fn(
        "recordAttemptEnd",
        [("_tournamentId", "uint256"), ("_player", "address"), ("_score", "uint256")],
        [],
        "nonpayable",
    ),
    _fn("endTournament", [("_tournamentId", "uint256")], [], "nonpayable"),
    _fn("withdraw", [], [], "nonpayable"),
]
