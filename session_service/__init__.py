"""Session & metrics tracking service"""
