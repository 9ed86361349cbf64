"""
服務層

這個 package 包含純計算與資料存取邏輯，不負責鎖定與 commit：
- StakeLedger：下注紀錄與百分比
- WinnerService：加權隨機抽獎
- NamingService：顯示名稱與轉盤顏色
- PresenceService：線上名單
- StateService：state_version 與事件紀錄
- ChangeFeed：快照推送
"""
