"""ftpsync - FTP/FTPS transport adapter for file synchronization

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Security by design (no credentials on disk, trust-on-first-use certificates)
- Fail fast with helpful guidance

ftpsync moves files to and from a remote FTP server for a sync engine,
throttling bandwidth, negotiating server certificate trust and normalizing
listing paths into canonical absolute form.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
