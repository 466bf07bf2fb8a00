"""
Ingest pipeline for logistics documents (ETD reports, load plans, delivery orders).

- gate: routing by file type
- excel_parser: workbook/CSV decoding
- header_mapper + ai_mapping: header -> canonical field mapping
- row_extractor + shipment_builder: one shipment bundle per row
- ocr_extract: images and PDFs
- scoring + validation: confidence and review flags
- pipeline: orchestrator with the document lifecycle
"""
