"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- ContractService：必要合約判斷
- ProgressService：隊伍進度解析（預設值、修正值）
- ScoringService：計分邏輯
- RankingService：排名邏輯
- StoreService：ORM 與快照的轉換
"""
