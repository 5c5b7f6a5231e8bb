import sys
import json
import time
import argparse
import mimetypes
import requests
from pathlib import Path

IMAGE_SUFFIXES = [".jpg", ".jpeg", ".png", ".gif", ".webp"]


def wait_for_terminal(base_url, item_id, timeout=30.0, interval=0.5):
    deadline = time.time() + timeout
    while time.time() < deadline:
        response = requests.get(f"{base_url}/api/v1/results/{item_id}", timeout=10)
        response.raise_for_status()
        body = response.json()
        if body["status"] != "processing":
            return body
        time.sleep(interval)
    return None


def run_system_check(base_url, image_dir, output):
    results = []

    health = requests.get(f"{base_url}/health", timeout=10)
    print(f"Health: HTTP {health.status_code} - {health.json().get('status')}")
    if health.status_code != 200:
        print("Service is not healthy, aborting")
        return 1

    images = sorted(p for p in Path(image_dir).glob("*") if p.suffix.lower() in IMAGE_SUFFIXES)
    if not images:
        print(f"No images found in {image_dir}")

    for img_path in images:
        print(f"Uploading {img_path.name}...")
        mime_type = mimetypes.guess_type(img_path.name)[0] or "application/octet-stream"

        try:
            with open(img_path, "rb") as f:
                response = requests.post(
                    f"{base_url}/api/v1/upload",
                    files={"image": (img_path.name, f, mime_type)},
                    timeout=30,
                )

            if response.status_code != 202:
                print(f"Rejected {img_path.name}: {response.status_code} - {response.text}")
                results.append({
                    "filename": img_path.name,
                    "status": "REJECTED",
                    "error": response.json().get("code"),
                })
                continue

            item_id = response.json()["itemId"]
            final = wait_for_terminal(base_url, item_id)
            if final is None:
                results.append({"filename": img_path.name, "itemId": item_id, "status": "TIMEOUT"})
                continue

            results.append({
                "filename": img_path.name,
                "itemId": item_id,
                "status": final["status"],
                "processingTimeMs": final.get("processingTimeMs"),
                "codes": [(code["type"], code["content"]) for code in final.get("qrCodes", [])],
                "error": final.get("error"),
            })

        except requests.RequestException as e:
            print(f"Error processing {img_path.name}: {str(e)}")
            results.append({"filename": img_path.name, "status": "ERROR", "error": str(e)})

    listing = requests.get(f"{base_url}/api/v1/uploads", params={"limit": 5}, timeout=10)
    print(f"Listing: HTTP {listing.status_code}, total={listing.json()['pagination']['total']}")

    with open(output, "w") as f:
        json.dump(results, f, indent=2)

    failed = [r for r in results if r["status"] in ("ERROR", "TIMEOUT")]
    print(f"System check complete: {len(results)} images, {len(failed)} problems. Results saved to {output}")
    return 1 if failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="End-to-end check against a running deployment")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--images", default="./sample_images")
    parser.add_argument("--output", default="system_check.json")
    args = parser.parse_args()
    sys.exit(run_system_check(args.base_url.rstrip("/"), args.images, args.output))
