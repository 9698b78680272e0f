import datetime
import json
import shutil

TIMESTAMP_KEYS = ["when"]
TERM_WIDTH, TERM_HEIGHT = shutil.get_terminal_size()
MIN_COL_WIDTH = 5


class PrettyPrinter():
    @staticmethod
    def print_pretty(x, csv=False, indent=0) -> None:
        if type(x) == list:
            PrettyPrinter._print_list(x, csv, indent)
        elif type(x) == dict:
            PrettyPrinter._print_dict(x, csv, indent)
        else:
            print(x)

    @staticmethod
    def print_history(entries, csv=False):
        if not entries:
            print("No saved results")
            return
        rows = []
        for entry in entries:
            row = {"when": entry.get("when")}
            if "bpm" in entry:
                row["BPM"] = entry["bpm"]
            else:
                body = entry.get("body")
                row["Field"] = entry.get("field")
                row["Status"] = entry.get("status")
                row["Summary"] = PrettyPrinter.barcode_name(body) or json.dumps(body)[:120]
            rows.append(row)
        PrettyPrinter._print_list_of_dicts(rows, csv, 0)

    @staticmethod
    def barcode_name(body):
        if not isinstance(body, dict):
            return None
        return body.get("name") or body.get("title") or body.get("product_name")

    @staticmethod
    def print_barcode(body, csv=False):
        """Best-effort display of whatever nutrition fields the barcode backend sent back."""
        if not isinstance(body, dict):
            PrettyPrinter.print_pretty(body, csv)
            return

        name = PrettyPrinter.barcode_name(body)
        nutrition = body.get("nutrition") if isinstance(body.get("nutrition"), dict) else {}
        calories = body.get("calories") or nutrition.get("calories")
        nutrients = body.get("nutrients") or body.get("nutrition")

        if name:
            print(name)
        if calories:
            print(f"Calories: {calories}")
        if isinstance(nutrients, dict):
            print("Nutrients")
            for k, v in nutrients.items():
                print(f"  {k}: {json.dumps(v) if isinstance(v, (dict, list)) else v}")
        if not name and not calories and not nutrients:
            print("No structured nutrition fields detected, showing raw below.")
            PrettyPrinter.print_pretty(body, csv, indent=2)

    @staticmethod
    def print_food(analysis, totals, csv=False):
        if not analysis.foods:
            print("No foods detected")
        else:
            PrettyPrinter._print_list_of_dicts([food.as_row() for food in analysis.foods], csv, 0)
        print("Totals")
        PrettyPrinter._print_dict(totals, csv, 2)

    @staticmethod
    def _print_dict(dict_, csv, indent) -> None:
        sep = "," if csv else ": "
        for k, v in dict_.items():
            if type(v) == list:
                print(indent * " " + f"{k}{sep}")
                PrettyPrinter._print_list(v, csv, indent + 2)
            elif type(v) == dict:
                print(indent * " " + f"{k}{sep}")
                PrettyPrinter._print_dict(v, csv, indent + 2)
            else:
                vv = "" if v is None else v
                print(indent * " " + f"{k}{sep}{vv}")

    @staticmethod
    def _print_list(list_, csv, indent):
        if len(list_) > 0 and type(list_[0]) == dict:
            PrettyPrinter._print_list_of_dicts(list_, csv, indent)
            return

        for item in list_:
            if type(item) == list:
                PrettyPrinter._print_list(item, csv, indent + 2)
            elif type(item) == dict:
                PrettyPrinter._print_dict(item, csv, indent + 2)
            else:
                print(indent * " " + f"{item}")

    @staticmethod
    def _print_list_of_dicts(list_of_dicts, csv, indent):
        if len(list_of_dicts) <= 0:
            return

        rows = []
        for dict_ in list_of_dicts:
            row = {}
            for k, v in dict_.items():
                if v is None:
                    row[k] = ""
                elif k in TIMESTAMP_KEYS:
                    try:
                        ts = datetime.datetime.fromisoformat(v)
                        row[k] = ts.isoformat() if csv else ts.strftime("%Y-%m-%d %H:%M")
                    except (TypeError, ValueError):
                        row[k] = v
                else:
                    row[k] = v
            rows.append(row)

        if csv:
            print(indent * " " + ",".join([f"{key}" for key in rows[0].keys()]))
            for row in rows:
                print(indent * " " + ",".join([f"{value}" for value in row.values()]))
            return

        # Find the column widths
        col_widths = [len(str(k)) for k in rows[0].keys()]
        for row in rows:
            for i, v in enumerate(row.values()):
                col_widths[i] = max(col_widths[i], len(str(v)))

        # If the sum of column widths exceeds the width of the terminal
        spaces_between_cols = len(rows[0].keys())
        excess = sum(col_widths) + indent + spaces_between_cols - TERM_WIDTH
        if excess > 0 and "Summary" in rows[0].keys():
            # Shrink the "Summary" column by the minimum amount possible
            idx = list(rows[0].keys()).index("Summary")
            col_widths[idx] = max(col_widths[idx] - excess, MIN_COL_WIDTH)
            for row in rows:
                if len(str(row["Summary"])) > col_widths[idx]:
                    row["Summary"] = str(row["Summary"])[:col_widths[idx] - 3] + "..."

        # Print the table header and table
        print(indent * " " + "".join([f"{str(key):{cw}} " for (cw, key) in zip(col_widths, rows[0].keys())]))
        for row in rows:
            print(indent * " " + "".join([f"{str(value):{cw}} " for (cw, value) in zip(col_widths, row.values())]))
