"""
計分設定：指標權重、正規化目標值、表現等級

權重以模式區分，每個模式的權重加總為 1，
所以 base score 一定落在 0-100。
"""
from review_engine.models import GameMode


METRIC_LABELS = {
    "cash": "Financial Health",
    "trl": "Technology Readiness",
    "development": "Product Development",
    "validations": "Customer Validation",
    "interviews": "Customer Interviews",
    "equity": "Equity Retained",
    "ip": "Intellectual Property",
    "legal": "Legal Milestones",
    "support": "Incubator & Grants",
}

DEFAULT_WEIGHTS = {
    GameMode.RESEARCH: {
        "trl": 0.25,
        "cash": 0.10,
        "validations": 0.15,
        "interviews": 0.10,
        "equity": 0.10,
        "ip": 0.15,
        "legal": 0.05,
        "support": 0.10,
    },
    GameMode.STARTUP: {
        "cash": 0.20,
        "development": 0.20,
        "validations": 0.20,
        "interviews": 0.10,
        "equity": 0.10,
        "legal": 0.10,
        "support": 0.10,
    },
}

# 各模式用來代表「技術進度」的指標（排名同分時比較）
TECHNOLOGY_METRIC = {
    GameMode.RESEARCH: "trl",
    GameMode.STARTUP: "development",
}

# 正規化：達到目標值即為 100 分
CASH_TARGET = 50000
DEVELOPMENT_HOURS_TARGET = 400
VALIDATIONS_TARGET = 5
INTERVIEWS_TARGET = 10
TRL_MIN = 3
TRL_MAX = 9

LEGAL_FORM_SCORES = {
    "bv": 80,
    "vof": 60,
    "cv": 60,
    "eenmanszaak": 50,
}
LEGAL_FORM_UNKNOWN_SCORE = 40
POINTS_PER_EMPLOYEE = 10

PATENT_POINTS = 60
PROVISIONAL_PATENT_POINTS = 40
INCUBATOR_POINTS = 60
GRANT_POINTS = 40

# (門檻, 等級, 顏色)，由高到低
PERFORMANCE_LEVELS = [
    (80, "Excellent", "#16a34a"),
    (60, "Good", "#2563eb"),
    (40, "Average", "#d97706"),
    (20, "Developing", "#ea580c"),
    (0, "Starting", "#6b7280"),
]

WEIGHT_TOLERANCE = 1e-6
