"""
合約服務：判斷一個回合需要主持人核對哪些實體合約

純計算邏輯，沒有副作用，也沒有錯誤情況：缺少的欄位一律視為「不需要」。

兩套規則並存：
- required_contracts()：依單一回合的活動 / 資金 / 辦公室判斷合約類別（審核核准用）
- EXPERT_CONTRACTS：依「累積活動」判斷各專家角色的細項合約，一旦需要就一直需要
"""
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Set

from review_engine.models import ContractType
from review_engine.schemas import RoundSnapshot


CONTRACT_LABELS = {
    ContractType.BANK: "Bank",
    ContractType.INVESTOR: "Investor",
    ContractType.PATENT: "Patent Expert",
    ContractType.INCUBATOR: "Incubator",
    ContractType.SUBSIDY: "Subsidy Adviser",
    ContractType.NETWORKER: "Networker",
    ContractType.TECH_EXPERT: "Tech Expert",
    ContractType.KVK: "KVK Expert",
}


def required_contracts(round_obj: Optional[RoundSnapshot]) -> Set[ContractType]:
    """
    計算回合需要核對的合約類別

    規則（各自獨立判斷，結果取聯集）：
    ┌──────────────────────────────────────────────────┬─────────────┐
    │ 回合條件                                          │ 合約        │
    ├──────────────────────────────────────────────────┼─────────────┤
    │ activities.kvkConsult                            │ kvk         │
    │ funding.loan > 0                                 │ bank        │
    │ funding.investment > 0                           │ investor    │
    │ activities.patentDIY / patentOutsourced          │ patent      │
    │ office == incubator                              │ incubator   │
    │ activities.subsidy 或 funding.subsidy > 0        │ subsidy     │
    │ activities.networking                            │ networker   │
    │ activities.marketAnalysisDIY / Outsourced        │ techExpert  │
    └──────────────────────────────────────────────────┴─────────────┘

    參數：
        round_obj: 回合快照（None 視為沒有任何活動）

    返回：
        合約類別的 set（同樣的輸入永遠得到同樣的結果）
    """
    if round_obj is None:
        return set()

    activities = round_obj.activities
    funding = round_obj.funding
    required = set()

    if activities.get("kvkConsult"):
        required.add(ContractType.KVK)
    if funding.loan > 0:
        required.add(ContractType.BANK)
    if funding.investment > 0:
        required.add(ContractType.INVESTOR)
    if activities.get("patentDIY") or activities.get("patentOutsourced"):
        required.add(ContractType.PATENT)
    if (round_obj.office or "").lower() == "incubator":
        required.add(ContractType.INCUBATOR)
    if activities.get("subsidy") or funding.subsidy > 0:
        required.add(ContractType.SUBSIDY)
    if activities.get("networking"):
        required.add(ContractType.NETWORKER)
    if activities.get("marketAnalysisDIY") or activities.get("marketAnalysisOutsourced"):
        required.add(ContractType.TECH_EXPERT)

    return required


def contract_details(round_obj: RoundSnapshot, contract_type: ContractType) -> List[Dict[str, str]]:
    """
    取得主持人核對紙本合約時要比對的數位欄位

    範例：
        bank → [{"label": "Loan amount", "value": "€20,000"}, {"label": "Interest rate", "value": "5%"}]
    """
    funding = round_obj.funding

    if contract_type == ContractType.BANK:
        return [
            {"label": "Loan amount", "value": _euro(funding.loan)},
            {"label": "Interest rate", "value": f"{funding.loan_interest:g}%"},
        ]
    if contract_type == ContractType.INVESTOR:
        return [
            {"label": "Investment", "value": _euro(funding.investment)},
            {"label": "Equity given", "value": f"{funding.investor_equity:g}%"},
        ]
    if contract_type == ContractType.SUBSIDY:
        return [
            {"label": "Subsidy received", "value": _euro(funding.subsidy)},
            {"label": "Adviser fee", "value": _euro(funding.subsidy_fee)},
        ]
    if contract_type == ContractType.KVK:
        legal_form = (round_obj.legal_form or "").upper() or "Unknown"
        return [{"label": "Legal form chosen", "value": legal_form}]
    return []


def _euro(amount: float) -> str:
    return f"€{amount:,.0f}"


# ============ 專家合約（累積活動） ============

class ExpertContract(NamedTuple):
    id: str
    name: str
    activities: tuple


EXPERT_CONTRACTS = {
    "tto": {
        "name": "TTO Officer",
        "contracts": [
            ExpertContract("ttoMeeting", "TTO Meeting Notes", ("ttoDiscussion",)),
            ExpertContract("licenceAgreement", "Licence Agreement", ("licenceNegotiation",)),
        ],
    },
    "patent": {
        "name": "Patent Attorney",
        "contracts": [
            ExpertContract("patentStrategy", "Patent Strategy Form", ("patentFiling", "patentDIY")),
            ExpertContract("ftoReport", "FTO Report", ("patentSearch",)),
        ],
    },
    "investor": {
        "name": "VC / Investor",
        "contracts": [
            ExpertContract("pitchDeck", "Pitch Deck Feedback", ("investorMeeting",)),
            ExpertContract("termSheet", "Term Sheet", ("investorNegotiation",)),
        ],
    },
    "grant": {
        "name": "Grant Advisor",
        "contracts": [
            ExpertContract(
                "grantApplication", "Grant Application",
                ("grantTakeoff", "grantWBSO", "grantRegional"),
            ),
        ],
    },
    "incubator": {
        "name": "Incubator",
        "contracts": [
            ExpertContract("incubatorApp", "Incubator Application", ("incubatorApplication",)),
        ],
    },
    "bank": {
        "name": "Bank / Loan Officer",
        "contracts": [
            ExpertContract("loanApplication", "Loan Application", ("bankMeeting",)),
            ExpertContract("loanAgreement", "Loan Agreement", ("loanApplication",)),
        ],
    },
    "industry": {
        "name": "Industry Partner",
        "contracts": [
            ExpertContract("ndaAgreement", "NDA Agreement", ("industryExploration",)),
            ExpertContract("pilotAgreement", "Pilot Agreement", ("pilotProject",)),
        ],
    },
    "customer": {
        "name": "Customer Expert",
        "contracts": [
            ExpertContract("interviewLog", "Interview Log", ("customerInterviews",)),
            ExpertContract("loi", "Letter of Intent", ("customerValidation",)),
        ],
    },
}


def cumulative_activities(rounds: Iterable[RoundSnapshot]) -> Set[str]:
    """
    計算隊伍到目前為止做過的所有活動

    邏輯：
    - 每個回合的 completed_activities（之前回合已完成的活動）
    - 加上每個回合目前勾選的活動旗標
    - 回合順序與中間缺少的回合都不影響結果

    用途：
        專家合約以累積活動判斷，旗標之後被取消也不會讓合約消失
    """
    done = set()
    for round_obj in rounds:
        done.update(round_obj.completed_activities)
        done.update(code for code, flag in round_obj.activities.items() if flag)
    return done


def required_expert_contracts(rounds: Iterable[RoundSnapshot]) -> Dict[str, List[ExpertContract]]:
    """
    依累積活動列出每個專家角色需要的細項合約

    返回：
        {expert_id: [ExpertContract, ...]}，只包含至少有一份合約需要的專家，
        順序與 EXPERT_CONTRACTS 相同
    """
    done = cumulative_activities(rounds)
    required = {}
    for expert_id, expert in EXPERT_CONTRACTS.items():
        contracts = [c for c in expert["contracts"] if done.intersection(c.activities)]
        if contracts:
            required[expert_id] = contracts
    return required


def missing_expert_contracts(
    rounds: Iterable[RoundSnapshot],
    verified: Mapping[str, bool],
) -> List[ExpertContract]:
    """
    列出需要但尚未核對的專家合約

    參數：
        rounds: 隊伍的所有回合
        verified: {contract_id: 是否已核對}

    返回：
        尚未核對的 ExpertContract 列表
    """
    missing = []
    for contracts in required_expert_contracts(rounds).values():
        missing.extend(c for c in contracts if not verified.get(c.id))
    return missing


def is_known_contract(key: str) -> bool:
    """合約核對的 key 可以是合約類別，也可以是專家合約的 id"""
    if key in {c.value for c in ContractType}:
        return True
    return any(
        c.id == key
        for expert in EXPERT_CONTRACTS.values()
        for c in expert["contracts"]
    )
