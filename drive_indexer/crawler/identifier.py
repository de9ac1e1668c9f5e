# =============================================================================
# Drive Indexer - パス識別子
# =============================================================================
# 絶対パスの文字列から、安定した 64bit の識別子を生成します。
#
# 同じパスからは、同一プロセス内でも別プロセス間でも必ず同じ値が得られます。
# これにより同じツリーを再度インデックスしても同じドキュメントIDになり、
# Meilisearch 上では上書き（冪等な再登録）として扱われます。
# =============================================================================

import hashlib

# 識別子のバイト数（64bit）
ID_DIGEST_SIZE = 8


def identify(path: str) -> int:
    """
    パス文字列から 64bit の符号なし整数IDを生成する

    組み込みの hash() はプロセスごとにランダム化されるため使用せず、
    BLAKE2b の 8バイトダイジェストを使用する。
    ファイルシステム上のデコードできないバイト列（surrogateescape で
    表現された文字）もそのまま元のバイト列としてハッシュ化する。

    Args:
        path: 絶対パスの文字列

    Returns:
        int: 0 以上 2**64 未満の識別子

    Note:
        異なるパスが同じIDになる確率はゼロではないが、
        ローカルの目録用途では許容する。
    """
    try:
        data = path.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        # surrogateescape の範囲外の孤立サロゲート
        data = path.encode("utf-8", "surrogatepass")
    digest = hashlib.blake2b(data, digest_size=ID_DIGEST_SIZE).digest()
    return int.from_bytes(digest, "big")
