"""Loan calculation and orchestration services shared by every view"""
