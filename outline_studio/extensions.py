from flask_wtf import CSRFProtect

from .workspace import WorkspaceStore

csrf = CSRFProtect()
workspaces = WorkspaceStore()
