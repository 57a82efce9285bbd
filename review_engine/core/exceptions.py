"""
自定義異常類別

集中管理所有審核與計分的業務異常，方便 API 層統一處理

所有異常都只影響單一隊伍或單一操作，沒有任何一個會讓整個程序停止
"""


class ReviewEngineException(Exception):
    """所有審核引擎異常的基類"""
    pass


# ============ 輸入驗證異常 ============

class ValidationError(ReviewEngineException):
    """輸入不合法（在本地拒絕，不會部分套用）"""
    pass


class MissingReason(ValidationError):
    """退回回合或修正數值時沒有填寫理由"""
    def __init__(self, action):
        self.action = action
        super().__init__(f"A reason is required to {action}")


class InvalidOverride(ValidationError):
    """修正值不合法（未知欄位或數值欄位填了非數字）"""
    def __init__(self, field_path, detail):
        self.field_path = field_path
        super().__init__(f"Invalid override for {field_path}: {detail}")


# ============ 審核狀態異常 ============

class IncompleteVerificationError(ReviewEngineException):
    """還有必要合約未核可就嘗試核准回合"""
    def __init__(self, outstanding):
        self.outstanding = sorted(outstanding)
        super().__init__(
            f"Cannot approve round: contracts not approved: {', '.join(self.outstanding)}"
        )


class InvalidStateTransition(ReviewEngineException):
    """非法的審核狀態轉換"""
    pass


# ============ 資料存取異常 ============

class TeamNotFound(ReviewEngineException):
    """隊伍不存在"""
    def __init__(self, team_id):
        self.team_id = team_id
        super().__init__(f"Team {team_id} not found")


class RoundNotFound(ReviewEngineException):
    """回合不存在"""
    def __init__(self, team_id, round_number):
        self.team_id = team_id
        self.round_number = round_number
        super().__init__(f"Round {round_number} of team {team_id} not found")


class PartialFetchError(ReviewEngineException):
    """排行榜彙整時，某一隊的資料無法取得"""
    def __init__(self, team_id, detail):
        self.team_id = team_id
        super().__init__(f"Data for team {team_id} unavailable: {detail}")


class PersistenceError(ReviewEngineException):
    """寫入失敗（呼叫端手上的審核物件維持上一次成功提交的狀態）"""
    pass
