"""クーポンコード生成"""
import secrets

# 見間違えやすい 0/O, 1/I を除外
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 10


def generate_code(length: int = CODE_LENGTH) -> str:
    """暗号論的乱数で推測困難なコードを生成"""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()
