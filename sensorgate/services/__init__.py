"""Gateway services: field decoding, dispatch, link control and console."""
