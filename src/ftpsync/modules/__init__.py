"""ftpsync modules - Self-contained bricks following the brick philosophy

Each module is a self-contained component with clear contracts:
- File Transfer: Session management, chunked transfers, listing normalization
- Progress: Real-time transfer progress display
"""
