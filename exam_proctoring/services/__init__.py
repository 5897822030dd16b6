"""Session state, persistence, event log and reviewer queries"""
