from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    full_name: str
    username: str
    image: Optional[str]
    # base64 public key, only present when the user enabled encryption
    public_key: Optional[str]
