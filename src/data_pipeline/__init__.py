"""Source image preparation for pattern synthesis.

Modules:
    - preprocess: decoding, square working image, luminance, importance field

Workflow:
    1. Uploaded photo (path / bytes) → load_image() with format and size limits
    2. Cover-fit into the working square on white
    3. Luminance + contrast curve, circular frame mask
    4. Sobel edges + darkness → importance field

All outputs are deterministic for identical inputs.
"""
