"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理審核狀態轉換
- ReviewWorkflow：純記憶體的審核操作
- ReviewManager：把審核操作寫入資料庫
- LeaderboardAggregator：即時排行榜
- Locks：並發控制工具
"""
