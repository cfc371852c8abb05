# authgate HTTP API layer
# Created: 2026-02-20
#
# Protocol endpoints (authorize, token, device, CIBA, discovery) live at the
# root as clients expect them; management endpoints live under /api/v1/.
