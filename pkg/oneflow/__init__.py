# OneFlow board core: task columns, point values, and member point distribution
#
# Components:
#   schema.py    - Data model (Project, Task, MemberAssignment, Column, TaskCategory, Division)
#   points.py    - Category -> points / eligible divisions / terminal column
#   board.py     - Column state machine (request_move, step)
#   ledger.py    - Member assignment ledger (toggle, even split, validate)
#   projects.py  - Project rules (type, event dates, asset links, team roles, archive)
#   store.py     - SQLite persistence with optimistic concurrency
#   activity.py  - Daily check-ins against tasks in progress
#   analytics.py - Read-only point and progress aggregation
#   service.py   - Load -> operate -> save orchestration with event callbacks
#   config.py    - YAML configuration and team roster
