"""
BHSS websystem backend.

FastAPI service for school nutrition logistics: distribution batches,
attendance and delivery records, announcements and events, coordinator
file submissions and the school directory, with live and web push
notifications for administrators.
"""
