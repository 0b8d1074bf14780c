import os
import requests
import time
import glob
import json
from concurrent.futures import ThreadPoolExecutor

API_URL = os.environ.get("LAB_API_URL", "http://localhost:8000/api/v1")
TERMINAL_STATUSES = {"complete", "error"}


def upload_file(file_path, skip_verification=False, subject_gender=None):
    try:
        with open(file_path, "rb") as f:
            files = {"file": (os.path.basename(file_path), f, "application/pdf")}
            data = {"skip_verification": str(skip_verification).lower()}
            if subject_gender:
                data["subject_gender"] = subject_gender
            response = requests.post(f"{API_URL}/lab-uploads", files=files, data=data)
            if response.status_code == 201:
                return response.json()
            else:
                print(f"Failed to upload {file_path}: {response.text}")
                return None
    except (OSError, requests.RequestException) as e:
        print(f"Error uploading {file_path}: {e}")
        return None


def save_result(upload, output_dir="pipeline_results"):
    os.makedirs(output_dir, exist_ok=True)
    file_path = os.path.join(output_dir, f"{upload['id']}.json")
    with open(file_path, "w") as f:
        json.dump({
            "filename": upload["filename"],
            "status": upload["status"],
            "extraction_confidence": upload.get("extraction_confidence"),
            "verification_passed": upload.get("verification_passed"),
            "corrections": upload.get("corrections"),
            "error_message": upload.get("error_message"),
            "extracted_data": upload.get("extracted_data"),
        }, f, indent=2)


def check_status(upload_id):
    try:
        response = requests.get(f"{API_URL}/lab-uploads/{upload_id}")
        if response.status_code == 200:
            upload = response.json()
            if upload["status"] in TERMINAL_STATUSES:
                save_result(upload)
            return upload["status"], upload.get("processing_stage")
        return "unknown", None
    except requests.RequestException:
        return "unreachable", None


def run_batch(pdf_dir, num_files=10, skip_verification=False, timeout=1800):
    print(f"Uploading up to {num_files} PDFs from {pdf_dir}...")

    all_files = sorted(glob.glob(os.path.join(pdf_dir, "*.pdf")))
    batch = all_files[:num_files]

    if not batch:
        print("No PDF files found.")
        return

    print(f"Found {len(all_files)} files. Processing {len(batch)}.")

    with ThreadPoolExecutor(max_workers=5) as executor:
        results = executor.map(lambda path: upload_file(path, skip_verification), batch)
        uploads = [r for r in results if r]

    print(f"Queued {len(uploads)} uploads.")

    if not uploads:
        return

    print("Monitoring processing status...")
    start_time = time.time()
    remaining = {u["id"]: u["filename"] for u in uploads}
    finished = {}

    while remaining:
        for upload_id in list(remaining):
            status, stage = check_status(upload_id)
            if status in TERMINAL_STATUSES:
                finished[upload_id] = status
                print(f"  {remaining.pop(upload_id)}: {status}")
            elif stage:
                print(f"  {remaining[upload_id]}: {status} ({stage})")

        if not remaining:
            break

        if time.time() - start_time > timeout:
            print(f"Timeout reached with {len(remaining)} upload(s) still running.")
            break

        time.sleep(2)

    duration = time.time() - start_time
    complete = sum(1 for s in finished.values() if s == "complete")
    print(f"\nBatch finished in {duration:.2f} seconds.")
    print(f"Final Results: {complete}/{len(uploads)} complete, {len(finished) - complete} failed.")
    if finished:
        print(f"Results are saved in: {os.path.abspath('pipeline_results')}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Upload a folder of lab PDFs and wait for results")
    parser.add_argument("pdf_dir")
    parser.add_argument("--count", type=int, default=10)
    parser.add_argument("--skip-verification", action="store_true")
    args = parser.parse_args()

    run_batch(args.pdf_dir, args.count, args.skip_verification)
