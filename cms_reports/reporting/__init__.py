"""
Report templates, data formatting, diagnostics and self-test tools.
"""
