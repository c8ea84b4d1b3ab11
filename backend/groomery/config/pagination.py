DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

def normalize_page_size(page_size_raw, default=DEFAULT_PAGE_SIZE, maximum=MAX_PAGE_SIZE):
    try:
        page_size = int(page_size_raw) if page_size_raw is not None else default
    except (TypeError, ValueError):
        raise ValueError('page_size must be int')
    return max(1, min(page_size, maximum))


def normalize_page_token(token_raw):
    """Page tokens are opaque to callers; an empty string means 'first page'."""
    if token_raw is None:
        return None
    token = str(token_raw).strip()
    return token or None
