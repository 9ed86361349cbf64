"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理所有房間狀態轉換
- Coordinator：序列化同一房間的所有變更操作
- Locks：並發控制工具
- Exceptions：業務異常
"""
