from ..bag import NATIVE_ID_FIELD


def rewrite_id(document: dict, id_field: str = 'id') -> dict:
    """ Rename MongoDB's `_id` into the model's identifier field. In-place.

    :param document: Document, as returned by MongoDB
    :param id_field: Name of the identifier field of the model
    :return: The same document
    """
    if NATIVE_ID_FIELD in document:
        document[id_field] = document.pop(NATIVE_ID_FIELD)
    return document
