from itsdangerous import BadSignature, SignatureExpired
from itsdangerous import URLSafeTimedSerializer

from .errors import InvalidIdToken

# ID tokens are minted by the sign-in service; here we only check them.
ID_TOKEN_MAX_AGE = 60 * 60


class UserTokens:
    def __init__(self, secret: str, max_age: int = ID_TOKEN_MAX_AGE):
        self._s = URLSafeTimedSerializer(secret, salt="takshashila.uid")
        self.max_age = max_age

    def issue(self, user_id: str) -> str:
        return self._s.dumps({"uid": user_id})

    def verify(self, token: str) -> str:
        try:
            data = self._s.loads(token, max_age=self.max_age)
        except SignatureExpired as e:
            raise InvalidIdToken("token expired") from e
        except BadSignature as e:
            raise InvalidIdToken("invalid token") from e
        uid = data.get("uid") if isinstance(data, dict) else None
        if not uid:
            raise InvalidIdToken("token carries no user id")
        return uid
