"""mridefacer: de-identify MRI volumes by masking face, ears and teeth."""

__version__ = '0.1.0'
