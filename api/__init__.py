"""
API 層：FastAPI routers

只負責 HTTP / WebSocket 轉換與錯誤碼對應，業務邏輯都在 RoomCoordinator
"""
