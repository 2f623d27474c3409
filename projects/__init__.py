"""
Projects Module for BriefHub
Domain: Project lifecycle that counts against plan limits

Endpoints:
- POST /v2/projects                (requires create_project entitlement)
- POST /v2/projects/<id>/archive   (archived projects free a slot)
"""
