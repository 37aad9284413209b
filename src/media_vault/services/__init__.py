from .relocation import Relocator, public_url, relocated_name

__all__ = ["Relocator", "public_url", "relocated_name"]
