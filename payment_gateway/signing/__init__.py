from payment_gateway.signing.canonical import HASH_FIELDS, canonicalize, encode_component
from payment_gateway.signing.signature import SignatureEngine

__all__ = [
    "HASH_FIELDS",
    "SignatureEngine",
    "canonicalize",
    "encode_component",
]
