from repchat.schemas.identity import CustomerIdentity, InstagramIdentity, PhoneIdentity

__all__ = ["CustomerIdentity", "PhoneIdentity", "InstagramIdentity"]
