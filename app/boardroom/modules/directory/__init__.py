"""
Directory collaborators (organizations, meetings, board members).

Owned by the wider product; this service only reads them to scope
resolutions to a tenant and to validate voters.
"""
