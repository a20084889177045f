"""EduBeacon: student dropout-risk analysis for mentors and admins."""
