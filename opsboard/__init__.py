# Opsboard: personal ops dashboard core
#
# Components:
#   config.py  - YAML + environment configuration, logging setup
#   kanban/    - task board: ordering keys, repository, cache, drag, editor
