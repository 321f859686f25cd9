# filevault/__init__.py
"""FileVault authentication and file services"""
def __getattr__(name):
    if name == "__version__":
        from .config import settings
        return settings.VERSION
    raise AttributeError(name)
