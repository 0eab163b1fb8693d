"""
Business logic services for the BillFree loyalty app.
"""
