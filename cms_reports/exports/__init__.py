"""
Export orchestration: state machine, data fetching and delivery.
"""
