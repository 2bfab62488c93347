import json
from pathlib import Path


def save_records_to_jsonl(records: list, output_file) -> int:
    """
    Writes records to a JSONL (JSON Lines) file, replacing any previous content.

    Parameters:
    -----------
    records : list
        List of dictionaries, one per line
    output_file : str or Path
        Path to the .jsonl file (created, with parent dirs, if it doesn't exist)

    Returns:
    --------
    int: Number of records written
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    # Write mode: re-running the same export must not duplicate lines
    with open(output_file, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")

    return len(records)


def load_records_from_jsonl(input_file) -> list:
    """Read every non-empty line of a JSONL file."""
    records = []
    with open(input_file, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                records.append(json.loads(line))
    return records


def metadata_file_for(output_file) -> Path:
    """transfers_x.jsonl -> transfers_x.metadata.json"""
    output_file = Path(output_file)
    return output_file.with_name(output_file.stem + ".metadata.json")


def save_metadata_json(metadata: dict, output_file) -> Path:
    """Write the export's metadata next to its JSONL file."""
    metadata_file = metadata_file_for(output_file)
    metadata_file.parent.mkdir(parents=True, exist_ok=True)
    with open(metadata_file, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2)
    return metadata_file
