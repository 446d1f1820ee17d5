# Backlog board: shared-secret projects with a four-column item board
#
# Components:
#   schema.py     - Data model (Project, BacklogItem, ItemStatus) and errors
#   ordering.py   - Position assignment and bulk reorder planning
#   store.py      - Storage contract + SQLite backend
#   file_store.py - Flat JSON document backend
#   config.py     - YAML/env configuration and backend selection
#   client.py     - HTTP API client (requests)
#   board.py      - Optimistic column state (snapshot / apply / commit-or-revert)
#   session.py    - Last-opened project session stores
#   controller.py - Client-side board workflow
