"""Confidential Lending - Service Layer"""
