"""sshore: SSH session engine with supervised tunnels, resumable SFTP and fan-out exec."""

__version__ = "0.1.0"
