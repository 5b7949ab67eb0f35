"""
pygpasswd Transactions Module
=============================
Lock → load → mutate → commit over the group and shadow group databases.

Components:
  - transaction.py: GroupTransaction (state machine, signal-safe finalize)
  - errors.py: error kinds and the exit status each maps to
"""
