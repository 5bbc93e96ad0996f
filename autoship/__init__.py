# autoship - orchestration core of an autonomous code-change agent
__version__ = "1.0.0"
