"""FTPS protocol module for the FTPS session client.

This module implements FTP over TLS (RFC 4217):
- FTPSClient: Orchestrates a session (connect, login, list, transfer, MDTM)
- ControlChannel: TLS control connection in implicit or explicit mode
- SecureDataNegotiator: PBSZ / PROT negotiation
- DataChannelFactory: Per-operation data connections with TLS session reuse
- KeepAliveMonitor: Control connection NOOPs during transfers
- Exceptions: FTPS-specific error types
"""
