"""
Showtime booking service: seat reservation and Stripe payment reconciliation
"""
