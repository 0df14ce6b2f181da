"""Bounded contexts: pricing, bookings, handover, ledger, billing"""
