from .image_compression import CompressionResult, compress_image, read_image_size
